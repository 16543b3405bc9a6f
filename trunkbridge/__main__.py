import sys

from trunkbridge.cli import main

sys.exit(main())
