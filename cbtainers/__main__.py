import sys

from cbtainers.cli import main

sys.exit(main())
