# tpm-recovery operational modules: command wrappers, reconciliation engine, CLI
