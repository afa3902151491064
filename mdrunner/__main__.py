import sys

from mdrunner.cli import main

sys.exit(main())
