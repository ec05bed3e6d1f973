"""Traffic routers that shift load between the primary and canary workloads in a resource store."""