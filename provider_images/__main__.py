from provider_images.cli import main

main()
