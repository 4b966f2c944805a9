from smart_batch_crop.cli import main

main()
