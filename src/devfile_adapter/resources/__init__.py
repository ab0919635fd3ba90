"""Builders for the cluster resources a devfile component is made of."""
