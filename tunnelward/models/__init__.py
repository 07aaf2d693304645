"""Account records and derived views"""
