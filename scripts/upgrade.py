#!/usr/bin/python3
# Usage:
#  > ape run upgrade --network ethereum:sepolia:infura \
#        -p proxy_deployment/constructor_params/sepolia/upgrade-mutopool.yml \
#        --proxy-address <PROXY ADDRESS>

from proxy_deployment.cli import upgrade as cli

if __name__ == "__main__":
    cli()
