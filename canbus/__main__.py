import sys

from canbus.cli import main

sys.exit(main())
