from dashboard_assistant.cli import main

main()
