"""
Run Status — Infrastructure Package

Ambient services shared by the aggregation core:
  - infra.logging: JSON log formatter, configure_logging, RunLogger
  - infra.config:  layered YAML/env configuration and Settings
  - infra.kube:    pod API client (HTTP and in-memory)
"""
