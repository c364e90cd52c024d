"""Protocol core: codecs, key agreement, ciphers and the pairing state machine."""
