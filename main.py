#!/usr/bin/env python3
"""
Main entry point for the event finalizer API
"""

from finalizer.app import create_app

app = create_app()

if __name__ == '__main__':
    settings = app.config['FINALIZER_SETTINGS']
    if settings.missing_credentials():
        print("\n" + "="*50)
        print("SETUP REQUIRED:")
        print("="*50)
        print("1. Get a Google Maps API key from: https://console.cloud.google.com/")
        print("   and enable the Places API and the Distance Matrix API")
        print("2. Get a HotPepper API key from: https://webservice.recruit.co.jp/")
        print("3. Put GOOGLE_MAPS_API_KEY and HOTPEPPER_KEY in the .env file")
        print("4. Restart the app")
        print("="*50)
        print("API will start but finalization is disabled without both keys\n")
    app.run(debug=True, host='0.0.0.0', port=settings.port)
