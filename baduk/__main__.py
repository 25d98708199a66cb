import sys

from baduk.cli import main

sys.exit(main())
