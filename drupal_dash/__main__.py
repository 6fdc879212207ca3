import sys

from drupal_dash.cli import main

sys.exit(main())
