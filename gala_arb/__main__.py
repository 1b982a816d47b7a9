from gala_arb.main import main

main()
