import sys

from cachanais.cli import main


sys.exit(main())
