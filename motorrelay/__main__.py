import sys

from motorrelay.cli import main

sys.exit(main())
