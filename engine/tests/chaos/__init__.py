"""
Chaos/failure injection testing suite.

Runs complete load tests against an in-memory fleet whose nodes really
hang, die and slow down when disrupted:
- Runs under mixed disruption patterns
- Nodes lost mid-run
- Lost writes hidden by disruption noise
"""
