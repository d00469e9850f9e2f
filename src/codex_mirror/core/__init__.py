"""Clone lifecycle, launching, diagnostics, and the per-clone building blocks they use."""
