from parkgate.cli import main

raise SystemExit(main())
