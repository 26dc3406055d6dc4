# unibundle/__main__.py
import sys

from unibundle.cli import main

sys.exit(main())
