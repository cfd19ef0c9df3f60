"""
zkbench: load-testing and resource-monitoring harness for the ZK-Auth API.

The service under test exposes a three-step, data-dependent workflow:
``POST /register`` issues a secret and a commitment, ``POST /proof`` turns
them into a zero-knowledge proof, and ``POST /verify`` checks the proof
against the commitment.  This package drives that workflow under load in
two independent modes:

- **Concurrency sweep** (:mod:`zkbench.sweep`): one fixed-duration phase
  per endpoint and concurrency level, with the server's CPU and memory
  sampled around every phase and reduced into one summary row each.
- **Staged profiles** (:mod:`zkbench.staged`): a ramping arrival-rate
  executor that runs the full register → proof → verify chain per
  iteration and gates the run on failure-rate and p95 thresholds.

Importing this package does not import Locust; only :mod:`zkbench.loadgen`,
:mod:`zkbench.staged` and :mod:`zkbench.locustfile` do, because Locust
monkey-patches the standard library as a side effect of being imported.
"""

__version__ = "0.1.0"
