"""routesync: load-balancer route synchronizer.

Keeps a load balancer's frontend/backend configuration in step with the
service instances published by a container platform's discovery API:
 - resolve link environment variables into a service/port/instance map
 - rebuild frontend entries from operator declarations
 - detect real changes by fingerprint and notify subscribers
 - small authenticated admin API to replace the declarations

The reconciliation core has no knowledge of the load balancer's config syntax;
renderers subscribe to committed configurations.
"""
