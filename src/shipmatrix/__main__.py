from shipmatrix.cli import main

raise SystemExit(main())
