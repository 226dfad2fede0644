from codesent.cli import main

raise SystemExit(main())
