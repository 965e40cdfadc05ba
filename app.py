# ===============================
# YOUTUBE RADIO
# Stations • Live queue • Audio relay
# ===============================

from radio.main import main

if __name__ == "__main__":
    main()
