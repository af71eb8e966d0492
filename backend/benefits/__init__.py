"""Benefits module — monthly VR / VT / mobility records and their disbursement."""
