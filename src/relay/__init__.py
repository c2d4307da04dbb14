"""Dual-socket relay between Twilio Media Streams and the OpenAI Realtime API.

One call owns one inbound media stream and one upstream realtime socket. The
controller is the only code that mutates a call's session.
"""
