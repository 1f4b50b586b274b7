import sys

from tcbuild.cli import main

sys.exit(main())
