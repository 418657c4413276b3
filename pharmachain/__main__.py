import sys

from pharmachain.cli import main

sys.exit(main())
