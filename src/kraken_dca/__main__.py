from kraken_dca.cli.main import main

raise SystemExit(main())
