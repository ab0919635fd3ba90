"""High level operations driving a devfile component on the cluster."""
