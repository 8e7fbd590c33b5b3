"""Zabbix agent GPU UserParameter installer."""

__version__ = "0.1.0"
