"""Record store, credential provisioning and lifecycle control"""
