#!/usr/bin/env python3
"""Run one PostgreSQL backup (for cron)"""
import sys
from pgbackup.cli import main

if __name__ == '__main__':
    sys.exit(main())
