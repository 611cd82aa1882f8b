import sys

from omnilaunch.cli import main

sys.exit(main())
