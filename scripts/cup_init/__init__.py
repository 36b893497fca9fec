"""cup-init deployer identity reconciliation.

Keeps the AWS IAM user used for deployments, its access key and its
attached policies consistent with the credential record stored in
PostgreSQL. Runs read-only (verify) or mutating (converge).
"""
