from github_mcp_server import main

main()
