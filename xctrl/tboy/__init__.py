"""Simulated switch nodes that answer control requests and publish channel, conference and CDR events to a bus."""