from ci_report.cli import main

main()
