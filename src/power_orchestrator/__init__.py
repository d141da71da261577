"""
power_orchestrator

This package sequences graceful power down and power up of a private cloud
stack by converging remote resources to a desired state.

We keep modules small and well separated:
core contains shared data structures, policies, results and errors
audit contains the leveled audit sink every component emits through
transport contains session adapters for vSphere, SSH, REST and out of band power
observe contains read only observation functions per control plane
converge contains the generic convergence loop and its specializations
gates contains health and readiness gates built on the same primitives
config contains the json settings loader
"""
