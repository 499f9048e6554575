#!/usr/bin/python3
# Usage:
#  > ape run deploy --network ethereum:sepolia:infura \
#        -p proxy_deployment/constructor_params/sepolia/deploy-mutopool.yml

from proxy_deployment.cli import deploy as cli

if __name__ == "__main__":
    cli()
