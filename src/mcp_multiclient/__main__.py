import sys

from mcp_multiclient.cli import main

sys.exit(main())
