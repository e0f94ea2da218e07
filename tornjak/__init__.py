"""
Tornjak Password Manager

A local, single-user credential store. Service, username and password triples
are kept in one file encrypted to the user's own key; passwords are handed out
through the clipboard and wiped again after a timeout.
"""
