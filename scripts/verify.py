#!/usr/bin/python3
# Usage:
#  > ape run verify --network ethereum:sepolia:infura --address <CONTRACT OR PROXY ADDRESS>

from proxy_deployment.cli import verify as cli

if __name__ == "__main__":
    cli()
