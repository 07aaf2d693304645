"""Platform collaborators: commands, services, certificates, notifications"""
