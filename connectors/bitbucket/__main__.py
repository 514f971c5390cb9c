import sys

from connectors.bitbucket.cli import main

sys.exit(main())
