import sys

from qr_code_issuer.cli import main

sys.exit(main())
