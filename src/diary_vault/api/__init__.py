# API Module - local HTTP interface to the diary vault
