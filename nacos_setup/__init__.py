"""
Nacos Setup - local standalone and cluster provisioning for the Nacos server
"""
__version__ = "0.1.0"
