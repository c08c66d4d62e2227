import sys

from ipmcp.cli import main

sys.exit(main())
