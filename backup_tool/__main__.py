import sys

from backup_tool.cli import main

if __name__ == '__main__':
    sys.exit(main())
